"""
Recall - memory relevance and retention engine.
"""

import os

import uvicorn

from app.main import app


if __name__ == "__main__":
    print("Recall starting...")
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8080")))
