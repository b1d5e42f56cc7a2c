from fastapi import FastAPI, HTTPException

from api.app import create_app
from core.settings import get_settings, load_app_config

config = load_app_config(get_settings())

try:
    app = create_app(config)
except RuntimeError:
    app = FastAPI(title="Document Conversion Jobs", version="0.1.0")

    @app.get("/")
    async def api_disabled() -> dict[str, str]:
        raise HTTPException(
            status_code=503,
            detail="Local API disabled. Enable by setting enable_local_api = true in config.toml "
            "or DOCJOBS_ENABLE_LOCAL_API=true",
        )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.api.host, port=config.api.port)
