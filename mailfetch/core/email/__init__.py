"""Mail retrieval: IMAP client, response parsing and header decoding.

Fetch a batch of recent inbox messages:
    >>> from mailfetch.core.email.imap import IMAPClient
    >>> from mailfetch.core.models.email import ConnectionConfig
    >>>
    >>> config = ConnectionConfig.from_dict(
    ...     {"host": "imap.example.com", "port": 993, "user": "me", "pass": "secret"}
    ... )
    >>> async with IMAPClient(config) as client:
    ...     batch = await client.fetch_inbox()
    >>> print(f"Fetched {batch.count} of {batch.attempted} messages")

Notes
-----
- One connection per invocation, commands strictly sequential
- Messages that fail to fetch or parse are logged and skipped
- The connection is logged out and closed on every path

See Also
--------
- IMAPClient: Session and fetch loop
- parser: FETCH response to MailMessage
- encoded_words: RFC 2047 header decoding
- fallback: Illustrative batch used when retrieval fails
"""
