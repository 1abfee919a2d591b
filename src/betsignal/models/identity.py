"""
Signal identity.

A signal occurrence is identified by (match id, market type, generation
time label). The label has second resolution, so two signals of the same
type for the same match produced within one second share an identity.
"""

from src.betsignal.models.schemas import Signal, SignalType

# Not expected in match ids, type names, or HH:MM:SS labels
SEPARATOR = "|"


def make_identity(match_id: str, signal_type: SignalType | str, timestamp: str) -> str:
    """Build an identity key from raw fields."""
    type_value = signal_type.value if isinstance(signal_type, SignalType) else str(signal_type)
    return SEPARATOR.join((match_id, type_value, timestamp))


def identity_of(signal: Signal) -> str:
    """Stable identity key of a signal."""
    return make_identity(signal.match_id, signal.type, signal.timestamp)
