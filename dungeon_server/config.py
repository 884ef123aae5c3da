from dotenv import load_dotenv

import os

load_dotenv()

SETTLEMENT_WS_URL = os.getenv("SETTLEMENT_WS_URL", "wss://clearnet.yellow.com/ws")
SERVER_PRIVATE_KEY = os.getenv("SERVER_PRIVATE_KEY")

APP_NAME = os.getenv("APP_NAME", "Enter the Dungeon")
AUTH_SCOPE = os.getenv("AUTH_SCOPE", "all")
SESSION_EXPIRY_SECONDS = int(os.getenv("SESSION_EXPIRY_SECONDS", 24 * 60 * 60))
ALLOWANCE_ASSET = os.getenv("ALLOWANCE_ASSET", "usdc")
ALLOWANCE_AMOUNT = os.getenv("ALLOWANCE_AMOUNT", "100")

AUTH_TIMEOUT = float(os.getenv("AUTH_TIMEOUT", 10))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", 10))
SUBMISSION_TIMEOUT = float(os.getenv("SUBMISSION_TIMEOUT", 30))

GAME_LOOP_INTERVAL = float(os.getenv("GAME_LOOP_INTERVAL", 1.0))
CLOSE_GRACE_DELAY = float(os.getenv("CLOSE_GRACE_DELAY", 5.0))

GAME_TYPE = os.getenv("GAME_TYPE", "dungeon_crawl")
GAME_VERSION = "1.0"
PROTOCOL_VERSION = os.getenv("PROTOCOL_VERSION", "NitroRPC/0.4")
BET_AMOUNT = os.getenv("BET_AMOUNT", "0")
CURRENCY = os.getenv("CURRENCY", "usdc")

# custodial fast-path: the service alone can reach quorum
SERVICE_WEIGHT = int(os.getenv("SERVICE_WEIGHT", 100))
PLAYER_WEIGHT = int(os.getenv("PLAYER_WEIGHT", 0))
QUORUM = int(os.getenv("QUORUM", 100))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
