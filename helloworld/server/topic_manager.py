"""
HelloWorld Topic Manager

Decides which outputs of a submitted transaction are valid HelloWorld
message tokens. Admission never raises: malformed or adversarial input is
rejected quietly so the host's indexing pipeline keeps running.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from helloworld.lib import pushdrop, util
from helloworld.lib.errors import DecodeError, VerificationError
from helloworld.lib.pushdrop import PushDropToken
from helloworld.lib.tx import deserialize_transaction
from helloworld.server.docs import TOPIC_MANAGER_DOCS
from helloworld.server.metrics import MetricNames, MetricsCollector


TOPIC = 'tm_helloworld'
MIN_MESSAGE_LENGTH = 2


@dataclass
class AdmissionDecision:
    """Outputs to admit and previously admitted inputs to keep tracking."""
    outputs_to_admit: List[int] = field(default_factory=list)
    coins_to_retain: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[int]]:
        return {
            'outputsToAdmit': list(self.outputs_to_admit),
            'coinsToRetain': list(self.coins_to_retain),
        }


def message_length(message: str) -> int:
    """Length in UTF-16 code units; characters outside the BMP count twice."""
    return len(message.encode('utf-16-le')) // 2


def extract_message(token: PushDropToken) -> str:
    """Return the HelloWorld message carried in the first field.

    Raises DecodeError if there is no field, it is not UTF-8, or the
    message is shorter than MIN_MESSAGE_LENGTH UTF-16 code units.
    """
    if not token.fields:
        raise DecodeError('Invalid HelloWorld token: wrong field count')
    try:
        message = token.fields[0].decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f'Invalid HelloWorld token: message is not UTF-8 ({e})') from e
    if message_length(message) < MIN_MESSAGE_LENGTH:
        raise DecodeError('Invalid HelloWorld token: message too short')
    return message


class TopicManager:
    """
    Admission validator for the `tm_helloworld` topic.
    """

    def __init__(self, metrics: MetricsCollector = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.metrics = metrics or MetricsCollector()

    def identify_admissible_outputs(self, beef: bytes,
                                    previous_coins: Sequence[int]) -> AdmissionDecision:
        """
        Identify the outputs of a transaction that carry valid HelloWorld tokens.

        Args:
            beef: The transaction as raw bytes, BEEF or Atomic BEEF
            previous_coins: Input indices spending previously admitted outputs

        Returns:
            AdmissionDecision; empty if the transaction cannot be parsed
        """
        try:
            tx = deserialize_transaction(beef)
        except DecodeError as e:
            self.logger.error(f'Error identifying admissible outputs: {e}')
            return AdmissionDecision()

        decision = AdmissionDecision()
        try:
            for vout, txout in enumerate(tx.outputs):
                if self._check_output(vout, txout.pk_script):
                    decision.outputs_to_admit.append(vout)
        except Exception:
            self.logger.exception('Unexpected failure identifying admissible outputs')
            return AdmissionDecision()

        if decision.outputs_to_admit:
            self.logger.info(f'Admitted HelloWorld outputs {decision.outputs_to_admit} '
                             f'({len(previous_coins)} previous coins, none retained)')
        return decision

    def _check_output(self, vout: int, script: bytes) -> bool:
        try:
            token = pushdrop.decode(script)
        except DecodeError as e:
            self._reject(vout, 'decode', e)
            return False

        # The signature covers every field, though only the first is the message
        try:
            pushdrop.verify_token(token)
        except VerificationError as e:
            self._reject(vout, 'verify', e)
            return False

        try:
            extract_message(token)
        except DecodeError as e:
            self._reject(vout, 'message', e)
            return False

        self.metrics.inc_counter(MetricNames.OUTPUTS_ADMITTED)
        return True

    def _reject(self, vout, reason, error):
        self.logger.debug(f'output {vout} not admissible: {error}')
        self.metrics.inc_counter(MetricNames.OUTPUTS_REJECTED, labels={'reason': reason})

    def get_documentation(self) -> str:
        """Overlay docs."""
        return TOPIC_MANAGER_DOCS

    def get_metadata(self) -> Dict[str, str]:
        """Metadata for overlay hosts."""
        return {
            'name': 'HelloWorld Topic Manager',
            'shortDescription': "What's your message to the world?",
        }
