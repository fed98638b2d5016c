from pathlib import Path
from dotenv import load_dotenv
import os

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Database
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'buildtrack')

# JWT Config
JWT_SECRET = os.environ.get('JWT_SECRET', 'buildtrack_secret_key')
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

# RBAC
OWNER_UIDS = [u.strip() for u in os.environ.get('OWNER_UIDS', '').split(',') if u.strip()]
DEFAULT_ROLE_ID = os.environ.get('DEFAULT_ROLE_ID', 'user')
ONLINE_TIMEOUT_MINUTES = int(os.environ.get('ONLINE_TIMEOUT_MINUTES', '5'))
CATEGORY_ORDER = ["system", "settings", "user", "finance", "project"]

# Budget thresholds (percent)
UTILIZATION_CRITICAL = 90
UTILIZATION_WARNING = 75
ALLOCATION_CRITICAL = 100
ALLOCATION_WARNING = 90

# AI assistant
OPENAI_API_KEY = os.environ.get('OPENAI_API_KEY')
AI_MODEL = os.environ.get('AI_MODEL', 'gpt-4o')

# Weather
OPENWEATHER_API_KEY = os.environ.get('OPENWEATHER_API_KEY')
OPENWEATHER_BASE_URL = "https://api.openweathermap.org/data/2.5"

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')
