"""
Discover image files to publish.
"""

import os
from typing import List, Optional

from .config import AppConfig
from .logging_setup import get_logger
from .models import ImageRecord

logger = get_logger(__name__)


class FolderScanner:
    """Turns the files of a folder into image records."""

    def __init__(self, config: AppConfig):
        """
        Initialize the folder scanner.

        Args:
            config: Application configuration
        """
        self.config = config
        self.case_insensitive = config.case_insensitive_extensions
        if self.case_insensitive:
            self.extensions = {ext.lower() for ext in config.image_extensions}
        else:
            self.extensions = set(config.image_extensions)

    def is_image_file(self, file_name: str) -> bool:
        """
        Check a file name against the configured extensions.

        Matching is case-sensitive unless case_insensitive_extensions is set.
        """
        extension = os.path.splitext(file_name)[1]
        if self.case_insensitive:
            extension = extension.lower()
        return extension in self.extensions

    def discover(self, folder: Optional[str] = None) -> List[ImageRecord]:
        """
        Create one record per image file directly inside a folder.

        Args:
            folder: Folder to scan (defaults to config.source_folder)

        Returns:
            Records sorted by file name; empty if the folder cannot be read
        """
        folder = folder or self.config.source_folder
        records = []

        try:
            file_names = sorted(os.listdir(folder))
        except OSError as e:
            logger.error(f"Error reading folder {folder}: {str(e)}")
            return records

        for file_name in file_names:
            file_path = os.path.join(folder, file_name)
            if not os.path.isfile(file_path) or not self.is_image_file(file_name):
                continue
            records.append(ImageRecord(file_name=file_name, source_path=folder))
            logger.info(f"Image file: {file_name} Path: {folder}")

        logger.info(f"Found {len(records)} image files in {folder}")
        return records
