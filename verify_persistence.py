import time
import subprocess
import httpx
import sys
import signal

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1/tracking"
TRIP_ID = "persist-trip-1"

SERVER_CMD = [
    sys.executable, "-m", "uvicorn", "tracking_backend.app.main:app",
    "--host", "127.0.0.1", "--port", "8000",
]

TRIP_PAYLOAD = {
    "tripId": TRIP_ID,
    "bookingId": "persist-booking-1",
    "driverId": "persist-driver-1",
    "customerId": "persist-customer-1",
    "pickup": {"coordinates": {"latitude": 12.9716, "longitude": 77.5946}},
    "dropoff": {"coordinates": {"latitude": 12.9789, "longitude": 77.5917}},
}


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()


def run_verification():
    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Start tracking and report the pickup arrival
        print("\n--- [Step 2] Starting Trip Tracking ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/start", json=TRIP_PAYLOAD)
        if resp.status_code == 409:
            print("⚠️ Trip already tracked (restored from a previous run?)")
        elif resp.status_code == 201:
            print("✅ Tracking started")
        else:
            raise Exception(f"Start failed: {resp.status_code} {resp.text}")

        resp = httpx.post(
            f"{BASE_URL}{API_PREFIX}/{TRIP_ID}/location",
            json={"latitude": 12.9716, "longitude": 77.5946, "speed": 12.0},
        )
        if resp.status_code != 200:
            raise Exception(f"Location update failed: {resp.status_code} {resp.text}")
        print(f"✅ Location recorded, stage={resp.json()['progress']['current_stage']}")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        stop_server(proc)

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        # 4. The trip should have been restored from the durable snapshot
        print("\n--- [Step 5] Checking Restored Trip ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/{TRIP_ID}/status")
        if resp.status_code != 200:
            raise Exception(f"Trip not restored after restart: {resp.status_code} {resp.text}")
        state = resp.json()
        print(f"✅ Trip restored: samples={state['samples_received']} pickup_triggered={state['pickup_zone']['triggered']}")

        # 5. Finish the trip so the next run starts clean
        print("\n--- [Step 6] Stopping Trip Tracking ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/{TRIP_ID}/stop", json={"reason": "completed"})
        if resp.status_code == 200:
            print("✅ Tracking stopped")
        else:
            print(f"❌ Stop failed: {resp.status_code} {resp.text}")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)


if __name__ == "__main__":
    run_verification()
