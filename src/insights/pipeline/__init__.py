"""Meeting analysis pipeline -- stage clients, normalizer, persistence, orchestrator.

One run takes an uploaded recording through download, transcription,
extraction, normalization and persistence, recording every failure with an
explicit FailureCode.
"""
