import os
import sys
from pathlib import Path

import uvicorn

PORT = int(os.environ.get("FORGEHEAL_PORT", "8678"))

if __name__ == "__main__":
    project_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path.cwd()
    os.environ["FORGEHEAL_PROJECT_DIR"] = str(project_dir.resolve())
    print(f"Starting ForgeHeal Backend for {project_dir} on http://localhost:{PORT}")

    enable_reload = os.environ.get("FORGEHEAL_BACKEND_RELOAD", "0") == "1"
    try:
        uvicorn.run(
            "forgeheal.web.backend.main:build_app",
            factory=True,
            host="0.0.0.0",
            port=PORT,
            reload=enable_reload,
        )
    except KeyboardInterrupt:
        print("\nStopping server...")
