"""
Cluster Client class.
"""

import requests
from typing import List


class ClusterClient:
    def __init__(self, host: str = "localhost", port: int = 8080):
        self.base_url = f"http://{host}:{port}"
        self.session = requests.Session()

    def addresses(self) -> List[str]:
        """
        Get the addresses of all live workers, as seen by this node.
        Returns an empty list if the node cannot answer.
        """
        try:
            response = self.session.get(f"{self.base_url}/addresses", timeout=10)
            if response.status_code == 200:
                data = response.json()
                if data.get("success"):
                    return data.get("addresses", [])
            return []
        except requests.RequestException:
            return []

    def role(self):
        """Get the node's current role ("leader", "worker" or None)."""
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=5)
            if response.status_code == 200:
                return response.json().get("role")
            return None
        except requests.RequestException:
            return None

    def stats(self) -> dict:
        """Get registry statistics."""
        try:
            response = self.session.get(f"{self.base_url}/stats", timeout=10)
            if response.status_code == 200:
                return response.json()
            return {}
        except requests.RequestException:
            return {}

    def health(self) -> bool:
        """Check if node is healthy."""
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.RequestException:
            return False

    def close(self):
        """Close the session."""
        self.session.close()
