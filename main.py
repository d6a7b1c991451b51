import uvicorn

from animesub.settings import settings

if __name__ == "__main__":
    uvicorn.run("animesub.app:app", host=settings.host, port=settings.port)
