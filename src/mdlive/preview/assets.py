import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from ..core.preview_config import string_list

logger = logging.getLogger(__name__)


@dataclass
class Asset:
    path: Path
    content: str


@dataclass
class ResolvedAssets:
    styles: List[Asset] = field(default_factory=list)
    scripts: List[Asset] = field(default_factory=list)
    initializer: Optional[Asset] = None


def resolve_path(base_location: Path, relative: str) -> Optional[Path]:
    """Join a configured path onto the base location, or None if it is unusable"""
    if not isinstance(relative, str) or not relative.strip():
        return None
    try:
        return (Path(base_location) / relative).resolve()
    except (OSError, ValueError) as e:
        logger.warning(f"Cannot resolve asset path {relative!r}: {e}")
        return None


def asset_paths(base_location: Path, config: Dict[str, Any]) -> Dict[str, List[Path]]:
    """Resolve the css, js and initializer entries of a configuration"""
    resolved = {'css': [], 'js': [], 'initializer': []}
    for key in ('css', 'js'):
        for relative in string_list(config, key):
            path = resolve_path(base_location, relative)
            if path is not None:
                resolved[key].append(path)
    initializer = config.get('initializer')
    if initializer:
        path = resolve_path(base_location, initializer)
        if path is not None:
            resolved['initializer'].append(path)
    return resolved


def watch_paths(base_location: Path, config: Dict[str, Any],
                config_path: Optional[Path] = None) -> Set[Path]:
    """Every path whose change should refresh the preview"""
    paths = {path for group in asset_paths(base_location, config).values() for path in group}
    if config_path is not None:
        paths.add(Path(config_path))
    return paths


async def _read_asset(path: Path) -> Optional[Asset]:
    try:
        content = await asyncio.to_thread(path.read_text, encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Skipping asset {path}: {e}")
        return None
    return Asset(path=path, content=content)


async def load_assets(base_location: Path, config: Dict[str, Any]) -> ResolvedAssets:
    """Read the configured assets; unreadable ones are left out"""
    paths = asset_paths(base_location, config)
    styles = await asyncio.gather(*(_read_asset(p) for p in paths['css']))
    scripts = await asyncio.gather(*(_read_asset(p) for p in paths['js']))
    initializer = None
    if paths['initializer']:
        initializer = await _read_asset(paths['initializer'][0])
    return ResolvedAssets(
        styles=[asset for asset in styles if asset is not None],
        scripts=[asset for asset in scripts if asset is not None],
        initializer=initializer
    )
