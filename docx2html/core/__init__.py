"""
Core infrastructure package for the docx2html service.

Modules:
- config   : Environment and path configuration model.
- errors   : Failure taxonomy shared by the engine, stager and lifecycle manager.
- models   : Pydantic request/result models and engine state.
- logging  : Lightweight console/file logging helpers.
- storage  : Filesystem utilities (durable writes, tree removal, hashing).
- proc     : Subprocess execution with timeout and memory limits; downloads.
- engine   : Engine handle around headless LibreOffice.
- stager   : Per-request artifact staging and cleanup.
- cleanup  : Background sweep of orphaned artifacts.
"""
