"""Minimal demonstration of one session turn against a local LM Studio server."""

from joshgpt_core.api.service import run_session_prompt
from joshgpt_core.infrastructure.storage.json_store import JsonSessionStore


class PrintSink:
    def append_line(self, text):
        print(text)


if __name__ == "__main__":
    question = "列出当前目录下的文件，并说明哪些是 Python 源码"
    store = JsonSessionStore()
    reply = run_session_prompt(question, store, output=PrintSink())
    print("User:", question)
    print("Agent:", reply["text"])
