import argparse
import asyncio
import json
import uuid

import websockets


def print_response(response_data: dict) -> None:
    """Print one server frame: reply, confirmation, then the agenda."""
    if "error" in response_data:
        print(f"Server Error: {response_data['error']}")
        return

    print(f"Front desk: {response_data.get('message', '')}")
    if response_data.get("confirmation"):
        print(f"  ({response_data['confirmation']})")
    for rejected in response_data.get("rejected_actions", []):
        print(f"  ! skipped {rejected.get('kind') or 'action'}: {rejected.get('reason')}")
    for appt in response_data.get("appointments", []):
        print(f"  [{appt['id']}] {appt['datetime'].replace('T', ' ')} {appt['patient_name'] or '-'} ({appt['status']})")
    for ticket in response_data.get("tickets", []):
        print(f"  [{ticket['id']}] ticket {ticket['priority']}: {ticket['topic']}")


async def send_message(websocket, thread_id, message, vertical):
    """Send a message to the WebSocket server."""
    message_data = {
        "thread_id": thread_id,
        "message": message,
        "vertical": vertical,
    }
    await websocket.send(json.dumps(message_data))


async def connect_and_chat(uri: str, vertical: str):
    """Connect to the WebSocket server and chat until the user quits."""
    thread_id = str(uuid.uuid4())

    try:
        print("Connecting to the front desk...")
        print(f"Using thread ID: {thread_id}")
        async with websockets.connect(uri) as websocket:
            while True:
                user_input = input("You: ")
                if user_input.lower() in ["exit", "quit", "bye"]:
                    print("Ending conversation. Goodbye!")
                    break
                if not user_input.strip():
                    continue

                await send_message(websocket, thread_id, user_input, vertical)
                response = await websocket.recv()
                print_response(json.loads(response))

    except websockets.exceptions.ConnectionClosedError:
        print("\nConnection closed by the server. Make sure the server is running.")
        print("To start the server, run: front-desk")
    except ConnectionRefusedError:
        print("\nCould not connect to the server. Make sure the server is running.")
        print("To start the server, run: front-desk")
    finally:
        print("\nChat client closed.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chat with the front desk over WebSocket.")
    parser.add_argument("--uri", default="ws://localhost:8000/ws")
    parser.add_argument("--vertical", default="Dentaire", choices=["Dentaire", "Esthétique", "Multi-spécialités"])
    args = parser.parse_args()
    asyncio.run(connect_and_chat(args.uri, args.vertical))
