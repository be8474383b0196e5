"""URL shortener service with HTTP and gRPC surfaces and asynchronous batched deletion."""
