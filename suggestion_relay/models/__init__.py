from suggestion_relay.models.business import Business
from suggestion_relay.models.lindy_request_log import LindyRequestLog
from suggestion_relay.models.lindy_response import LindyResponse
