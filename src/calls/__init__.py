"""Per-call turn coordination between the caller, the voice engine and the transcript."""
