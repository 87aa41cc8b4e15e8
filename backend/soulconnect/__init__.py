"""SoulConnect realtime chat and matching backend."""
