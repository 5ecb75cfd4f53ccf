"""Export-asset scanning, downloading, and file materialization."""
