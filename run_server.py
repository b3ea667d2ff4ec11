import logging
import os

import uvicorn

if __name__ == "__main__":
    logging.basicConfig(
        level=os.environ.get("CCE_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("Starting Conflict & Context Engine API...")
    print("Docs available at: http://localhost:8000/docs")

    uvicorn.run(
        "conflict_engine.api.server:app",
        host="0.0.0.0",
        port=int(os.environ.get("CCE_PORT", "8000")),
        reload=False
    )
