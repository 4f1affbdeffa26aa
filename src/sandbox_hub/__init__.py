"""Web chat hub for an agent CLI running inside a Docker sandbox."""
