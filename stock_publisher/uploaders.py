"""
Browser-driven upload of enriched records to stock photo platforms.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from playwright.sync_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from .browser_session import BrowserSession
from .config import AppConfig, GettyConfig, PexelsConfig
from .errors import UploadStepError, UploadTimeoutError
from .logging_setup import get_logger
from .models import ImageRecord, UploadReport

logger = get_logger(__name__)


class BatchUploader(ABC):
    """Abstract base class for upload targets."""

    @staticmethod
    def get_uploader(config: AppConfig) -> 'BatchUploader':
        """
        Factory method to get the uploader for the configured target.

        Args:
            config: Application configuration

        Returns:
            An instance of the appropriate BatchUploader subclass
        """
        if config.upload_target is None:
            raise ValueError("No upload target configured")

        target_type = config.upload_target.target_type.lower()
        if target_type == 'getty':
            return GettyUploader(config)
        elif target_type == 'pexels':
            return PexelsUploader(config)
        raise ValueError(f"Unsupported upload target: {target_type}")

    def __init__(self, config: AppConfig):
        self.config = config
        self.target = config.upload_target
        self.step_timeout_ms = self.target.step_timeout_ms
        self.upload_timeout_ms = self.target.upload_timeout_ms

    def upload(self, session: BrowserSession, records: List[ImageRecord]) -> UploadReport:
        """
        Create a batch on the target and push every eligible record into it, one at a time.

        Args:
            session: Open browser session carrying the target's cookies
            records: Enriched records

        Returns:
            Report of uploaded and excluded files

        Raises:
            UploadStepError: If any step fails; the error carries the partial report
        """
        report = UploadReport(target=self.target.target_type)

        if self.config.upload_incomplete:
            to_upload = list(records)
        else:
            to_upload = [record for record in records if record.is_eligible()]
            report.excluded = [record.file_name for record in records if not record.is_eligible()]
            for name in report.excluded:
                logger.warning(f"Not uploading {name}: description or keywords missing")

        if not to_upload:
            logger.info("No records to upload")
            return report

        page = session.page
        try:
            self.open_batch(page)
        except UploadStepError as e:
            report.not_attempted = [record.file_name for record in to_upload]
            e.report = report
            logger.error(f"Could not open a batch on {report.target}: {str(e)}")
            raise

        for index, record in enumerate(to_upload):
            logger.info(f"Uploading image file: {record.file_name}")
            try:
                self.upload_file(page, record)
            except UploadStepError as e:
                report.failed[record.file_name] = str(e)
                report.not_attempted = [r.file_name for r in to_upload[index + 1:]]
                e.report = report
                logger.error(
                    f"Upload to {report.target} stopped at {record.file_name}: {str(e)} "
                    f"({len(report.uploaded)} uploaded, {len(report.not_attempted)} not attempted)"
                )
                raise
            report.uploaded.append(record.file_name)

        logger.info(f"Uploaded {len(report.uploaded)} files to {report.target}")
        return report

    @abstractmethod
    def open_batch(self, page) -> None:
        """Navigate to the target and prepare it to receive files."""
        pass

    @abstractmethod
    def upload_file(self, page, record: ImageRecord) -> None:
        """Upload one file and wait until the target reports it done."""
        pass

    def _goto(self, page, url: str, step: str) -> None:
        try:
            page.goto(url, timeout=self.step_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise UploadTimeoutError(step, f"Timed out loading {url}: {str(e)}")
        except PlaywrightError as e:
            raise UploadStepError(step, f"Could not load {url}: {str(e)}")

    def _wait_for(self, page, selector: str, step: str, timeout_ms: Optional[int] = None) -> None:
        """Poll until a selector is visible or raise UploadTimeoutError."""
        timeout_ms = timeout_ms or self.step_timeout_ms
        try:
            page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            raise UploadTimeoutError(step, f"{selector} did not appear within {timeout_ms} ms")
        except PlaywrightError as e:
            raise UploadStepError(step, str(e))

    def _click(self, page, selector: str, step: str) -> None:
        self._wait_for(page, selector, step)
        try:
            page.click(selector, timeout=self.step_timeout_ms)
        except PlaywrightTimeoutError:
            raise UploadTimeoutError(step, f"{selector} was not clickable within {self.step_timeout_ms} ms")
        except PlaywrightError as e:
            raise UploadStepError(step, str(e))

    def _set_file(self, page, selector: str, record: ImageRecord, step: str) -> None:
        try:
            page.set_input_files(selector, record.file_path, timeout=self.step_timeout_ms)
        except PlaywrightTimeoutError:
            raise UploadTimeoutError(step, f"{selector} not available within {self.step_timeout_ms} ms")
        except PlaywrightError as e:
            raise UploadStepError(step, str(e))

    def _choose_file(self, page, trigger_selector: str, record: ImageRecord, step: str) -> None:
        """Click a control that opens the file picker and answer it with the record's path."""
        self._wait_for(page, trigger_selector, step)
        try:
            with page.expect_file_chooser(timeout=self.step_timeout_ms) as chooser_info:
                page.click(trigger_selector, timeout=self.step_timeout_ms)
            chooser_info.value.set_files(record.file_path)
        except PlaywrightTimeoutError:
            raise UploadTimeoutError(step, f"No file picker opened within {self.step_timeout_ms} ms")
        except PlaywrightError as e:
            raise UploadStepError(step, str(e))

    def _wait_for_completion(self, page, template: str, record: ImageRecord) -> None:
        selector = template.format(file_name=record.file_name)
        self._wait_for(page, selector, "wait_for_upload", self.upload_timeout_ms)


class GettyUploader(BatchUploader):
    """Getty Images contributor portal: create a batch, then add files to it."""

    def __init__(self, config: AppConfig):
        super().__init__(config)
        if not isinstance(self.target, GettyConfig):
            raise ValueError("Upload target must be a GettyConfig instance")

    def open_batch(self, page) -> None:
        self._goto(page, self.target.start_url, "open_batches")
        self._click(page, self.target.create_batch_selector, "create_batch")
        self._click(page, self.target.confirm_batch_selector, "confirm_batch")
        self._wait_for(page, self.target.upload_button_selector, "open_batch")

    def upload_file(self, page, record: ImageRecord) -> None:
        self._choose_file(page, self.target.upload_button_selector, record, "select_file")
        self._click(page, self.target.confirm_upload_selector, "confirm_upload")
        self._wait_for_completion(page, self.target.completion_selector, record)


class PexelsUploader(BatchUploader):
    """Pexels upload page: files are added straight to the upload form."""

    def __init__(self, config: AppConfig):
        super().__init__(config)
        if not isinstance(self.target, PexelsConfig):
            raise ValueError("Upload target must be a PexelsConfig instance")

    def open_batch(self, page) -> None:
        self._goto(page, self.target.start_url, "open_upload_page")
        if self.target.sign_in_selector:
            self._click(page, self.target.sign_in_selector, "sign_in")
        self._click(page, self.target.upload_button_selector, "open_uploader")

    def upload_file(self, page, record: ImageRecord) -> None:
        self._set_file(page, self.target.file_input_selector, record, "select_file")
        self._wait_for_completion(page, self.target.completion_selector, record)
