from rich.text import Text

__version__ = "0.1.0"

APP_DESCRIPTION = "Resolve signing credentials and export an IPA, whatever it takes"


def get_banner_text() -> Text:
    return Text("SignCascade", style="bold green")
