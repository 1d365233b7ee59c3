import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .workspace import TextDocument, Workspace

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".mdlive.json"
DEFAULT_EXTENSIONS = ['.md', '.markdown']


def config_path_for(workspace_folder: Optional[Path]) -> Optional[Path]:
    """Workspace configuration lives at the workspace root only"""
    if workspace_folder is None:
        return None
    return Path(workspace_folder) / CONFIG_FILE_NAME


async def load_preview_config(config_path: Optional[Path]) -> Dict[str, Any]:
    """Read and parse the workspace configuration; any failure yields {}"""
    if config_path is None:
        return {}
    try:
        text = await asyncio.to_thread(config_path.read_text, encoding='utf-8')
        config = json.loads(text)
    except FileNotFoundError:
        return {}
    except Exception as e:
        logger.warning(f"Ignoring unreadable preview config {config_path}: {e}")
        return {}

    if not isinstance(config, dict):
        logger.warning(f"Ignoring preview config {config_path}: top level is not an object")
        return {}
    return config


def resolve_base_location(workspace: Workspace, document: TextDocument) -> Tuple[Path, Optional[Path]]:
    """Return (base location for assets, config file path or None)"""
    folder = workspace.workspace_folder_for(document.path)
    if folder is None:
        return document.path.parent, None
    return folder, config_path_for(folder)


def allowed_extensions(config: Dict[str, Any]) -> List[str]:
    extensions = config.get('fileExtensions')
    if isinstance(extensions, list):
        return [ext.lower() for ext in extensions if isinstance(ext, str)]
    extension = config.get('fileExtension')
    if isinstance(extension, str):
        return [extension.lower()]
    return list(DEFAULT_EXTENSIONS)


def is_previewable(document: TextDocument, config: Dict[str, Any]) -> bool:
    if document.language_id == 'markdown':
        return True
    return document.path.suffix.lower() in allowed_extensions(config)


def string_list(config: Dict[str, Any], key: str) -> List[str]:
    """Return config[key] when it is a list, keeping only its string entries"""
    value = config.get(key)
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def external_script_urls(config: Dict[str, Any]) -> List[str]:
    return string_list(config, 'npmUrls') + string_list(config, 'moduleUrls')


async def should_open_for_document(workspace: Workspace, document: TextDocument) -> bool:
    """Auto-open check: only documents inside a workspace folder qualify"""
    try:
        folder = workspace.workspace_folder_for(document.path)
        if folder is None:
            return False
        config = await load_preview_config(config_path_for(folder))
        return is_previewable(document, config)
    except Exception as e:
        logger.error(f"Auto-open check failed for {document.uri}: {e}")
        return False
