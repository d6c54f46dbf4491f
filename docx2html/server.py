from __future__ import annotations

import os

from fastapi import FastAPI

from docx2html.core.cleanup import start_cleanup_loop
from docx2html.core.config import get_config
from docx2html.api import routes
from docx2html.api.routes import router as api_router


_CFG = get_config()


app = FastAPI(title="docx2html-service")
app.include_router(api_router)
app.add_exception_handler(Exception, routes.unhandled_error)


@app.on_event("startup")
def on_startup():
    # DATA_ROOT holds artifacts and the engine profile; both are private to this process
    for d in (_CFG.data_root, _CFG.work_root, _CFG.profile_dir, _CFG.log_dir):
        d.mkdir(parents=True, exist_ok=True)

    if _CFG.eager_init:
        routes.ctx.manager.start_initialization()

    start_cleanup_loop(_CFG, routes.ctx.manager, routes.ctx.stager)


@app.on_event("shutdown")
def on_shutdown():
    routes.ctx.manager.shutdown()


def main() -> None:
    import uvicorn

    # One worker: the engine profile under PROFILE_DIR cannot be shared between processes
    uvicorn.run(
        "docx2html.server:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        workers=1,
    )


if __name__ == "__main__":
    main()
