from pathlib import Path

# Package root (reimburse/)
BASE_PATH = Path(__file__).resolve().parent.parent
