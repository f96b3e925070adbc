"""Multi-connection, resumable range downloader with workers, a monitor and resume state."""