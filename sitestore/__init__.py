"""
Backend package for the site: documents, content blocks and sections behind
a FastAPI service.

Uploaded files live on local disk and are mirrored to an FTP server; the
relational state is snapshotted to JSON next to the database and on the
mirror, so a host that loses its disk can rebuild itself at boot.
"""
