"""
HelloWorld Lookup Service

Keeps the message index in step with the lifecycle of admitted outputs and
answers client lookups against it.

Per output the lifecycle is: unseen -> admitted (output_added) -> removed
(output_spent or output_deleted). Only admitted outputs have a record. A
removed output only comes back through a fresh output_added, which stores a
brand-new record.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from helloworld.lib import pushdrop, util
from helloworld.lib.errors import HelloWorldError, StorageError, ValidationError
from helloworld.server.docs import LOOKUP_SERVICE_DOCS
from helloworld.server.metrics import MetricNames, MetricsCollector
from helloworld.server.record_store import RecordStore, SortOrder
from helloworld.server.topic_manager import TOPIC, extract_message


SERVICE = 'ls_helloworld'

_FIELD_ERRORS = {
    'limit': 'Limit must be a non-negative number',
    'skip': 'Skip must be a non-negative number',
    'startDate': 'Invalid startDate provided!',
    'start_date': 'Invalid startDate provided!',
    'endDate': 'Invalid endDate provided!',
    'end_date': 'Invalid endDate provided!',
    'sortOrder': "sortOrder must be 'asc' or 'desc'",
    'sort_order': "sortOrder must be 'asc' or 'desc'",
    'message': 'message must be a string',
}


class LookupQuery(BaseModel):
    """Query payload of a HelloWorld lookup question."""
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    message: Optional[str] = None
    limit: int = Field(default=50, ge=0)
    skip: int = Field(default=0, ge=0)
    start_date: Optional[datetime] = Field(default=None, alias='startDate')
    end_date: Optional[datetime] = Field(default=None, alias='endDate')
    sort_order: Literal['asc', 'desc'] = Field(default=SortOrder.DESC, alias='sortOrder')

    @field_validator('start_date', 'end_date', mode='before')
    @classmethod
    def _empty_date_is_absent(cls, value):
        if value == '':
            return None
        return value

    @field_validator('sort_order', mode='before')
    @classmethod
    def _default_sort(cls, value):
        if value is None or value == '':
            return SortOrder.DESC
        return value


class LookupQuestion(BaseModel):
    """A lookup question addressed to an overlay lookup service."""
    service: str
    query: Union[Dict[str, Any], str, None] = None


class LookupService:
    """
    Lookup service for the HelloWorld protocol.

    The record store is injected so that tests and hosts choose the engine.
    """

    def __init__(self, storage: RecordStore, metrics: MetricsCollector = None,
                 default_limit: int = 50, max_limit: Optional[int] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.storage = storage
        self.metrics = metrics or MetricsCollector()
        self.default_limit = default_limit
        self.max_limit = max_limit

    # ========================================================================
    # Output lifecycle notifications
    # ========================================================================

    async def output_added(self, txid: str, output_index: int,
                           output_script: bytes, topic: str) -> bool:
        """
        Index a newly admitted output.

        Returns True if a record was stored. Decode, validation and storage
        failures are logged and counted, never raised.
        """
        if topic != TOPIC:
            return False

        try:
            token = pushdrop.decode(output_script)
            message = extract_message(token)
        except HelloWorldError as e:
            return self._failed('decode', txid, output_index, e)

        try:
            await self.storage.store_record(txid, output_index, message)
        except StorageError as e:
            return self._failed('store', txid, output_index, e)

        self.metrics.inc_counter(MetricNames.RECORDS_STORED)
        self.logger.info(f'Indexed HelloWorld message {txid}.{output_index}')
        return True

    async def output_spent(self, txid: str, output_index: int, topic: str) -> bool:
        """Remove the record of a spent output."""
        return await self._remove(txid, output_index, topic, 'spent')

    async def output_deleted(self, txid: str, output_index: int, topic: str) -> bool:
        """Remove the record of an output the host no longer tracks."""
        return await self._remove(txid, output_index, topic, 'deleted')

    async def _remove(self, txid, output_index, topic, why):
        if topic != TOPIC:
            return False
        try:
            existed = await self.storage.delete_record(txid, output_index)
        except StorageError as e:
            return self._failed('delete', txid, output_index, e)
        if existed:
            self.metrics.inc_counter(MetricNames.RECORDS_DELETED, labels={'reason': why})
            self.logger.info(f'Removed HelloWorld message {txid}.{output_index} ({why})')
        return True

    def _failed(self, reason, txid, output_index, error) -> bool:
        level = logging.ERROR if isinstance(error, StorageError) else logging.WARNING
        self.logger.log(level, f'HelloWorldLookupService: failed to {reason} '
                               f'{txid}.{output_index}: {error}')
        self.metrics.inc_counter(MetricNames.INDEX_FAILURES, labels={'reason': reason})
        return False

    # ========================================================================
    # Queries
    # ========================================================================

    def parse_question(self, question) -> LookupQuery:
        """Validate a lookup question and return its query.

        Raises ValidationError with a human-readable reason.
        """
        if not question:
            raise ValidationError('A valid query must be provided!')
        if isinstance(question, LookupQuestion):
            question = question.model_dump()
        if not isinstance(question, dict):
            raise ValidationError('A valid query must be provided!')
        if question.get('service') != SERVICE:
            raise ValidationError('Lookup service not supported!')

        payload = question.get('query')
        if payload is None:
            payload = {}
        elif isinstance(payload, str):
            payload = {'message': payload}
        elif not isinstance(payload, dict):
            raise ValidationError('Query must be an object or a message string')

        try:
            query = LookupQuery.model_validate(payload)
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = first['loc'][0] if first['loc'] else ''
            raise ValidationError(_FIELD_ERRORS.get(loc, f'Invalid query: {first["msg"]}')) from None

        if 'limit' not in query.model_fields_set:
            query.limit = self.default_limit
        if self.max_limit is not None and query.limit > self.max_limit:
            query.limit = self.max_limit
        return query

    async def lookup(self, question) -> Dict[str, Any]:
        """
        Answer a lookup question.

        Raises ValidationError for malformed questions and StorageError if
        the index cannot be read.
        """
        query = self.parse_question(question)
        self.metrics.inc_counter(MetricNames.LOOKUPS)

        start = time.monotonic()
        if query.message:
            records = await self.storage.find_by_message(
                query.message, query.limit, query.skip, query.sort_order)
        else:
            records = await self.storage.find_all(
                query.limit, query.skip, query.start_date, query.end_date,
                query.sort_order)
        self.metrics.observe_histogram(MetricNames.LOOKUP_DURATION, time.monotonic() - start)

        return {
            'type': 'output-list',
            'outputs': [record.to_dict() for record in records],
        }

    def get_documentation(self) -> str:
        """Overlay docs."""
        return LOOKUP_SERVICE_DOCS

    def get_metadata(self) -> Dict[str, str]:
        """Metadata for overlay hosts."""
        return {
            'name': 'HelloWorld Lookup Service',
            'shortDescription': 'Find messages on-chain.',
        }
