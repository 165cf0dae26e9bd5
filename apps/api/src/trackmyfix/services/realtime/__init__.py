from trackmyfix.services.realtime.job_stream import JobStreamSession
from trackmyfix.services.realtime.notifier import MutationNotifier
from trackmyfix.services.realtime.owner_stream import OwnerStreamSession
from trackmyfix.services.realtime.sequence import SequenceCounterStore, job_key, owner_key
from trackmyfix.services.realtime.session import SessionState, StreamSession, stream_response

__all__ = [
    "JobStreamSession",
    "MutationNotifier",
    "OwnerStreamSession",
    "SequenceCounterStore",
    "SessionState",
    "StreamSession",
    "job_key",
    "owner_key",
    "stream_response",
]
