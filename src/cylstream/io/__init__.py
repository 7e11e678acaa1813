"""Setup-file and reservoir-file readers and writers."""
