"""Task document merge, completion guard, and subtask expansion."""
