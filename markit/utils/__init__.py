from markit.utils.authenticateAdmin import authenticate_admin, bcrypt_context, find_admin_id
from markit.utils.createAccessToken import create_access_token
from markit.utils.decodeAccessToken import decode_token
