"""
Read image metadata and prepare images for the captioning service.
"""

import io
import os
import base64
from typing import Optional, Tuple

from PIL import Image

from .config import AppConfig
from .errors import EnrichmentStepError
from .logging_setup import get_logger
from .models import ImageRecord

logger = get_logger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


class ImageProcessor:
    """Class to handle image metadata and encoding."""

    def __init__(self, config: AppConfig):
        """
        Initialize the image processor.

        Args:
            config: Application configuration
        """
        self.config = config
        self.max_resolution = config.preview_max_resolution

    def read_metadata(self, record: ImageRecord) -> ImageRecord:
        """
        Fill in a record's dimensions and file size.

        Args:
            record: Record to update in place

        Returns:
            The same record

        Raises:
            EnrichmentStepError: If the file cannot be read or decoded
        """
        try:
            with Image.open(record.file_path) as img:
                width, height = img.size
            byte_size = os.path.getsize(record.file_path)
        except OSError as e:
            raise EnrichmentStepError("metadata", f"Error reading image {record.file_name}: {str(e)}")

        record.width = width
        record.height = height
        record.byte_size = byte_size

        logger.info(
            f"Image: {record.file_name} | Dimensions: Width - {width}, Height - {height} "
            f"| Size: {byte_size / (1024 * 1024):.2f} MB"
        )
        return record

    def encode_image(self, record: ImageRecord) -> Tuple[str, str]:
        """
        Base64-encode an image, downscaling first when a max resolution is set.

        Returns:
            Tuple of (base64 string, MIME type)
        """
        if not self.max_resolution:
            with open(record.file_path, 'rb') as f:
                raw = f.read()
            return base64.b64encode(raw).decode('utf-8'), self.detect_mime_type(record.file_path)

        with Image.open(record.file_path) as img:
            img_copy = img.copy()

        if img_copy.width > self.max_resolution or img_copy.height > self.max_resolution:
            img_copy.thumbnail((self.max_resolution, self.max_resolution))
            logger.debug(f"Resized {record.file_name} to {img_copy.width}x{img_copy.height}")

        buffer = io.BytesIO()
        if img_copy.mode != 'RGB':
            img_copy = img_copy.convert('RGB')
        img_copy.save(buffer, format="JPEG", quality=85)
        img_b64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
        img_copy.close()
        buffer.close()
        return img_b64, DEFAULT_MIME_TYPE

    def to_data_uri(self, record: ImageRecord) -> str:
        """
        Encode an image file as a data URI.

        Raises:
            EnrichmentStepError: If the file cannot be read
        """
        try:
            img_b64, mime_type = self.encode_image(record)
        except OSError as e:
            raise EnrichmentStepError("description", f"Error encoding image {record.file_name}: {str(e)}")

        logger.debug(f"Prepared {record.file_name} for captioning (base64 size: {len(img_b64)} chars)")
        return f"data:{mime_type};base64,{img_b64}"

    @staticmethod
    def detect_mime_type(file_path: str) -> str:
        """MIME type from the decoded image format, falling back to JPEG."""
        mime_type: Optional[str] = None
        try:
            with Image.open(file_path) as img:
                mime_type = Image.MIME.get(img.format)
        except OSError:
            logger.debug(f"Could not detect image format for {file_path}")
        return mime_type or DEFAULT_MIME_TYPE
