"""
Per-record enrichment chain, fanned out across a batch of images.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Callable, Tuple

from tqdm import tqdm

from .caption_providers import CaptionProvider
from .completion_client import StructuredCompletionClient
from .config import AppConfig, STEP_NAMES
from .errors import EnrichmentStepError, BatchAbortedError
from .image_processor import ImageProcessor
from .logging_setup import get_logger
from .models import ImageRecord, RecordOutcome, RecordStatus, BatchReport
from .prompt_templates import (
    KEYWORD_FIELD, KEYWORD_FUNCTION_NAME, get_keyword_schema, get_keyword_messages
)

logger = get_logger(__name__)


class EnrichmentPipeline:
    """Runs metadata, description and keyword steps for every record of a batch."""

    def __init__(self, config: AppConfig,
                 completion_client: Optional[StructuredCompletionClient] = None,
                 caption_provider: Optional[CaptionProvider] = None,
                 image_processor: Optional[ImageProcessor] = None):
        """
        Initialize the pipeline.

        Args:
            config: Application configuration
            completion_client: Client used for keyword extraction
            caption_provider: Vision service used for descriptions
            image_processor: Metadata reader and image encoder
        """
        self.config = config
        self.max_workers = config.max_workers
        self.completion_client = completion_client or StructuredCompletionClient(config)
        self.caption_provider = caption_provider or CaptionProvider.get_provider(config)
        self.image_processor = image_processor or ImageProcessor(config)

    def steps(self) -> List[Tuple[str, Callable[[ImageRecord], None]]]:
        """The enrichment steps in the order they run for each record."""
        handlers = {
            "metadata": self.extract_metadata,
            "description": self.generate_description,
            "keywords": self.extract_keywords,
        }
        return [(name, handlers[name]) for name in STEP_NAMES]

    def extract_metadata(self, record: ImageRecord) -> None:
        self.image_processor.read_metadata(record)

    def generate_description(self, record: ImageRecord) -> None:
        data_uri = self.image_processor.to_data_uri(record)
        record.description = self.caption_provider.describe(data_uri)
        logger.info(f"Description for {record.file_name}: {record.description}")

    def extract_keywords(self, record: ImageRecord) -> None:
        """
        Ask the completion service for keywords describing the record.

        A record without a description is skipped or given the configured
        placeholder, depending on config.missing_description.
        """
        description = record.description
        if description is None:
            if self.config.missing_description == "skip":
                logger.info(f"Skipping keywords for {record.file_name}: no description")
                return
            description = self.config.description_placeholder
            logger.info(f"Using placeholder description for {record.file_name}")

        completion = self.config.completion
        result = self.completion_client.complete(
            completion.model,
            get_keyword_messages(description, self.config.keyword_count),
            get_keyword_schema(),
            KEYWORD_FUNCTION_NAME,
            completion.temperature,
            completion.max_tokens
        )
        record.keywords = list(result[KEYWORD_FIELD])
        logger.info(f"Keywords for {record.file_name}: {'  '.join(record.keywords)}")

    def enrich_record(self, record: ImageRecord) -> RecordOutcome:
        """
        Run every step for one record, applying each step's failure policy.

        Args:
            record: Record to enrich in place

        Returns:
            Outcome describing which steps completed or failed
        """
        outcome = RecordOutcome(record=record)
        start_time = time.time()

        for step_name, step in self.steps():
            try:
                step(record)
                outcome.completed_steps.append(step_name)
            except Exception as e:
                error = e if isinstance(e, EnrichmentStepError) else EnrichmentStepError(step_name, str(e))
                outcome.errors[step_name] = str(error)
                policy = self.config.policy_for(step_name)

                if policy == "soft":
                    logger.warning(f"{step_name} failed for {record.file_name}, continuing: {str(e)}")
                    continue

                logger.error(f"{step_name} failed for {record.file_name}, aborting record: {str(e)}")
                if self.config.debug_mode:
                    import traceback
                    logger.error(f"Traceback: {traceback.format_exc()}")
                outcome.status = RecordStatus.FAILED
                outcome.failed_step = step_name
                outcome.elapsed = time.time() - start_time
                return outcome

        outcome.status = RecordStatus.COMPLETE if record.is_eligible() else RecordStatus.INCOMPLETE
        outcome.elapsed = time.time() - start_time
        return outcome

    def run(self, records: List[ImageRecord]) -> BatchReport:
        """
        Enrich every record concurrently and collect one outcome per record.

        Args:
            records: Records to enrich

        Returns:
            Report with outcomes in input order

        Raises:
            BatchAbortedError: If a step with the abort_batch policy failed
        """
        start_time = time.time()
        outcomes: List[Optional[RecordOutcome]] = [None] * len(records)

        if records:
            workers = self.max_workers or len(records)
            logger.info(f"Enriching {len(records)} records with {workers} workers")

            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="Enrich") as executor:
                future_to_index = {
                    executor.submit(self.enrich_record, record): index
                    for index, record in enumerate(records)
                }

                for future in tqdm(as_completed(future_to_index), total=len(records),
                                   desc="Enriching", disable=not self.config.show_progress):
                    index = future_to_index[future]
                    try:
                        outcomes[index] = future.result()
                    except Exception as e:
                        record = records[index]
                        logger.error(f"Executor exception for {record.file_name}: {str(e)}")
                        outcomes[index] = RecordOutcome(
                            record=record,
                            status=RecordStatus.FAILED,
                            failed_step='executor',
                            errors={'executor': str(e)}
                        )

        report = BatchReport(outcomes=outcomes, total_time=time.time() - start_time)
        self._log_detailed_stats(report)

        aborted = [
            outcome for outcome in report.outcomes
            if outcome.status == RecordStatus.FAILED
            and self.config.policy_for(outcome.failed_step) == "abort_batch"
        ]
        if aborted:
            names = ", ".join(outcome.record.file_name for outcome in aborted)
            raise BatchAbortedError(f"Enrichment aborted by failures in: {names}", report)

        return report

    def enrich(self, records: List[ImageRecord]) -> List[ImageRecord]:
        """
        Enrich records in place.

        Returns:
            The same record objects, in input order
        """
        return self.run(records).records

    def _log_detailed_stats(self, report: BatchReport) -> None:
        """Log statistics about the enrichment run."""
        stats = report.to_dict()
        total = stats['total_records']
        logger.info("=== Enrichment Statistics ===")
        logger.info(f"Total records: {total}")
        logger.info(f"Complete: {stats['complete_records']}")
        logger.info(f"Incomplete: {stats['incomplete_records']}")
        logger.info(f"Failed: {stats['failed_records']}")
        logger.info(f"Total time: {report.total_time:.1f}s")
        for outcome in report.outcomes:
            if outcome.errors:
                logger.info(f"  {outcome.record.file_name}: {outcome.status.value} {outcome.errors}")
