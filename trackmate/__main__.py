import uvicorn

from trackmate.utils import settings

if __name__ == "__main__":
    uvicorn.run("trackmate.main:app", host="0.0.0.0", port=settings.PORT)
