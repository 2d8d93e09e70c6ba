from rich.theme import Theme

myplant_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "plant": "bold green4",
    }
)
