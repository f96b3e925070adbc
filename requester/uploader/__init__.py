"""Single-request and parallel block uploaders with resumable block state."""