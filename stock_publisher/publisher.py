"""
End-to-end publishing run: scan, enrich, report, upload.
"""

from dataclasses import dataclass
from typing import Optional, Callable

from .browser_session import BrowserSession
from .config import AppConfig
from .enrichment_pipeline import EnrichmentPipeline
from .folder_scanner import FolderScanner
from .logging_setup import get_logger, setup_logging
from .models import BatchReport, UploadReport
from .prompt_templates import format_record_summary
from .uploaders import BatchUploader

logger = get_logger(__name__)


@dataclass
class PublishResult:
    """Enrichment report plus the upload report, when an upload ran."""
    batch: BatchReport
    upload: Optional[UploadReport] = None


def publish(config: AppConfig, folder: Optional[str] = None, upload: bool = True,
            pipeline: Optional[EnrichmentPipeline] = None,
            uploader: Optional[BatchUploader] = None,
            session_factory: Callable[..., BrowserSession] = BrowserSession,
            configure_logging: bool = False) -> PublishResult:
    """
    Enrich every image in a folder and upload the eligible ones.

    Args:
        config: Application configuration
        folder: Folder to scan (defaults to config.source_folder)
        upload: Whether to run the upload stage
        pipeline: Enrichment pipeline to use (built from config if omitted)
        uploader: Uploader to use (built from config if omitted)
        session_factory: Builds the browser session for the upload target
        configure_logging: Set up root logging from config before running

    Returns:
        PublishResult with the enrichment and upload reports

    Raises:
        BatchAbortedError: If enrichment was aborted by a step policy
        UploadStepError: If an upload step failed
    """
    if configure_logging:
        setup_logging(config)

    records = FolderScanner(config).discover(folder)
    if not records:
        logger.info("No images to publish")
        return PublishResult(batch=BatchReport())

    pipeline = pipeline or EnrichmentPipeline(config)
    batch = pipeline.run(records)

    for index, record in enumerate(batch.records, start=1):
        logger.info(format_record_summary(index, record))

    result = PublishResult(batch=batch)
    if not upload or config.upload_target is None:
        logger.info("Upload stage skipped")
        return result

    uploader = uploader or BatchUploader.get_uploader(config)
    with session_factory(config, config.upload_target) as session:
        result.upload = uploader.upload(session, batch.records)

    return result
