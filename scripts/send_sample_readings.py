import os
import random
import time

import dotenv
import requests

dotenv.load_dotenv()

'''
    Simulates both field producers against a running API:
    the gateway posting JSON and the webhook posting multipart forms (NPK + message, no audio).
'''

API_URL = os.getenv("API_URL", "http://127.0.0.1:8000")
TOTAL_MESSAGES = int(os.getenv("TOTAL_MESSAGES", 20))
INTERVAL = float(os.getenv("INTERVAL", 1))

MESSAGES = [
    "Soil is dry, irrigation recommended",
    "Conditions normal",
    "Nitrogen low, consider fertilizing",
]

for i in range(TOTAL_MESSAGES):
    # --- Gateway (JSON) ---
    reading = {
        "temperature": round(random.uniform(20, 38), 1),
        "humidity": round(random.uniform(40, 95), 1),
        "soil_moisture": round(random.uniform(10, 80), 1),
    }
    r = requests.post(f"{API_URL}/receive-nodered-data", json=reading, timeout=10)
    print(f"[{i+1}] JSON -> {reading} ({r.status_code})")

    # --- Webhook (multipart) ---
    form = {
        "temperature": str(reading["temperature"]),
        "humidity": str(reading["humidity"]),
        "soil_moisture": str(reading["soil_moisture"]),
        "nitrogen": str(random.randint(5, 60)),
        "phosphorus": str(random.randint(5, 60)),
        "potassium": str(random.randint(5, 60)),
        "auto_message": random.choice(MESSAGES),
    }
    # Sending the form as files forces a multipart body
    r = requests.post(
        f"{API_URL}/receive-sensor-data",
        files={k: (None, v) for k, v in form.items()},
        timeout=10,
    )
    print(f"[{i+1}] MULTIPART -> N={form['nitrogen']} P={form['phosphorus']} K={form['potassium']} ({r.status_code})")

    time.sleep(INTERVAL)

print("Simulation finished.")
