import os

import uvicorn

from gasto_categorizer.app import app
from gasto_categorizer.logger import get_logging_config

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=get_logging_config(),
    )
