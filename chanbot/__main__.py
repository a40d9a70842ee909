"""
chanbot 的入口点，允许通过 python -m chanbot 运行。
"""

from chanbot.cli.commands import app

if __name__ == "__main__":
    app()
