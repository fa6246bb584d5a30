from .auth_api_models import *
from .chat_api_models import *
from .contact_api_models import *
from .realtime_api_models import *
