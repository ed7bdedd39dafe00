import logging
import os

import uvicorn

logger = logging.getLogger("entrypoint")


def main() -> None:
  """Serve the API with uvicorn; schema migrations run in a separate deploy step."""
  host = os.getenv("COURSEWORK_HOST", "0.0.0.0")
  port = int(os.getenv("COURSEWORK_PORT", "8002"))
  logger.info("Starting coursework engine on %s:%s", host, port)
  uvicorn.run("coursework.main:app", host=host, port=port, server_header=False)


if __name__ == "__main__":
  main()
