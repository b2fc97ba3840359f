import requests
import dotenv
import os

dotenv.load_dotenv()

'''
    Obtain an access token from the identity service, to call the admin and settings endpoints
    with "Authorization: Bearer <token>".
'''

BASE_URL = os.getenv("BACKEND_URL")
API_KEY = os.getenv("BACKEND_ANON_KEY") or os.getenv("BACKEND_SERVICE_KEY")
EMAIL = os.getenv("AGRI_EMAIL")
PASSWORD = os.getenv("AGRI_PASSWORD")

url = f"{BASE_URL}/auth/v1/token?grant_type=password"

payload = {
    "email": EMAIL,
    "password": PASSWORD
}

response = requests.post(url, json=payload, headers={"apikey": API_KEY}, timeout=10)

if response.status_code == 200:
    token = response.json().get("access_token")
    if token:
        print("Access token:", token)
    else:
        print("No token returned. Check that the user exists and the password is correct.")
else:
    print("Error:", response.status_code, response.text)
