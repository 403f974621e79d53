"""Monitor and drive Claude Code CLI sessions from their on-disk logs and stdio control protocol."""
