"""
ImgBed Backend — Services Layer
=================================

Service Inventory:
    - identifiers:        unguessable image identifiers
    - image_service:      Pillow decode/inspect/re-encode (format/transform engine)
    - file_service:       storage adapter for `<id>.<ext>` files
    - ledger:             image metadata records (SQLAlchemy)
    - auth_service:       bearer token verification (PyJWT)
    - upload_service:     upload and soft-delete workflows
    - retrieval_service:  path parsing, lookup, headers and streaming
"""
