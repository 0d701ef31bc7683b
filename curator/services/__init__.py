"""Application services composing core logic with external clients."""
