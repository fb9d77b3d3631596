import secrets

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel


class CreateUrl(BaseModel):
    long_url: str
    months_valid: int = 1


def create_app() -> FastAPI:
    app = FastAPI(title="Mock URL Shortener")
    urls = {}

    @app.post("/api/urls")
    async def create_url(body: CreateUrl):
        short_code = secrets.token_urlsafe(6)
        urls[short_code] = body.long_url
        return {"short_code": short_code, "long_url": body.long_url}

    @app.get("/{short_code}")
    async def resolve(short_code: str):
        if short_code not in urls:
            raise HTTPException(status_code=404, detail="unknown short code")
        return {"long_url": urls[short_code]}

    return app


app = create_app()


# Run with: uvicorn mock_service.app:app --port 3001 --reload
