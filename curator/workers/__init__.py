"""Background worker loops and the job store they share."""
