"""
cli.py
Обработка аргументов командной строки и UI.
"""
import argparse
import logging
import time
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn
from rich.table import Table
from rich.panel import Panel
from rich import box

from config import Mode, PRESETS, StencilerConfig, StencilSettings, get_preset, parse_hex_color
from exporter import FORMATS, StencilExporter
from image_processor import ImageProcessor

console = Console()
log = logging.getLogger("stencil")


def _hex_color(value: str):
    try:
        return parse_hex_color(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _preset_name(value: str) -> str:
    try:
        get_preset(value)
    except KeyError as e:
        raise argparse.ArgumentTypeError(e.args[0])
    return value


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"ожидается целое число, получено {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"должно быть >= 1, получено {number}")
    return number


class ConsoleApp:
    def __init__(self):
        self.config = StencilerConfig()
        self.img_proc = ImageProcessor(config=self.config)
        self.exporter = StencilExporter(self.config)
        # AI-редактор создаётся лениво: без --ai сеть и SDK не нужны
        self.ai_editor = None

    def parse_args(self, argv=None):
        parser = argparse.ArgumentParser(description="Photo -> Tattoo Stencil")
        parser.add_argument("input_dir", type=str, help="Папка с картинками")
        parser.add_argument("--out", type=str, default="output", help="Папка для сохранения")
        parser.add_argument("--preset", type=_preset_name, default=None,
                            help=f"Пресет: {', '.join(PRESETS)}")
        parser.add_argument("--mode", choices=[m.value for m in Mode], default=None)
        parser.add_argument("--contrast", type=float, default=None)
        parser.add_argument("--brightness", type=float, default=None)
        parser.add_argument("--edge-intensity", type=float, default=None)
        parser.add_argument("--thickness", type=float, default=None)
        parser.add_argument("--detail", type=float, default=None)
        parser.add_argument("--smoothing", type=float, default=None)
        parser.add_argument("--invert", action="store_true")
        parser.add_argument("--flip-x", action="store_true")
        parser.add_argument("--line-color", type=_hex_color, default=None, help="#RRGGBB")
        parser.add_argument("--transparent", action="store_true", help="Белый фон -> прозрачный (только PNG)")
        parser.add_argument("--format", choices=FORMATS, default="png", help="Формат файла результата")
        parser.add_argument("--max-dim", type=_positive_int, default=self.config.MAX_DIM)
        parser.add_argument("--ai", choices=["clean", "stencil", "flatten"], default=None,
                            help="clean: AI-чистка готового стенсила; stencil/flatten: AI-лайнарт из фото")
        parser.add_argument("--prompt", type=str, default=None, help="Своя AI-инструкция для исходного фото")
        parser.add_argument("-v", "--verbose", action="store_true")
        args = parser.parse_args(argv)
        if args.transparent and args.format == "jpg":
            parser.error("--transparent несовместим с --format jpg")
        return args

    def build_settings(self, args) -> StencilSettings:
        settings = StencilSettings.from_preset(args.preset) if args.preset else StencilSettings()
        overrides = {}
        for name in ("contrast", "brightness", "edge_intensity", "thickness", "detail", "smoothing", "line_color"):
            value = getattr(args, name)
            if value is not None:
                overrides[name] = value
        if args.mode is not None:
            overrides["mode"] = Mode(args.mode)
        if args.invert:
            overrides["invert"] = True
        if args.flip_x:
            overrides["flip_x"] = True
        return replace(settings, **overrides).clamped()

    def setup_logging(self, verbose: bool):
        root = logging.getLogger()
        if not any(isinstance(h, RichHandler) for h in root.handlers):
            root.addHandler(RichHandler(console=console, show_path=False))
        root.setLevel(logging.DEBUG if verbose else logging.WARNING)

    def collect_files(self, input_path: Path):
        files = []
        for ext in self.config.IMAGE_EXTENSIONS:
            files.extend(input_path.glob(f"*.{ext.lower()}"))
            files.extend(input_path.glob(f"*.{ext.upper()}"))
        # Удаляем дубликаты (на регистронезависимых ФС)
        return sorted(set(files))

    def ai_pass(self, rgba, preset=None, prompt=None):
        """Отправляет RGBA в генеративный сервис, возвращает декодированный RGBA-ответ."""
        if self.ai_editor is None:
            from ai_editor import GenerativeEditor
            self.ai_editor = GenerativeEditor(self.config)
        png = self.exporter.encode_png(rgba)
        if prompt:
            result = self.ai_editor.edit(png, prompt)
        else:
            result = self.ai_editor.apply_preset(png, preset)
        decoded = self.img_proc.decode_image(result)
        if decoded is None:
            raise ValueError("AI вернул нечитаемое изображение")
        return decoded

    def process_file(self, file: Path, settings: StencilSettings, args):
        """
        Порядок шагов:
        --prompt         : фото -> AI -> стенсил с настройками пользователя
        --ai stencil/... : фото -> AI-лайнарт -> порог 50 без блюра (цвет линии сохраняется)
        --ai clean       : стенсил -> AI-чистка -> сохраняется ответ сервиса
        """
        # 1. Загрузка + ограничение размера
        rgba = self.img_proc.prepare(self.img_proc.load_image(file))

        # 2. AI по исходному фото (опционально)
        if args.prompt:
            rgba = self.img_proc.prepare(self.ai_pass(rgba, prompt=args.prompt))
        if args.ai in ("stencil", "flatten"):
            rgba = self.img_proc.prepare(self.ai_pass(rgba, preset=args.ai))
            settings = settings.as_lineart()

        # 3. Конвейер стенсила
        stencil = self.img_proc.process(rgba, settings)

        # 4. AI-чистка готового стенсила
        if args.ai == "clean":
            stencil = self.ai_pass(stencil, preset="clean")

        # 5. Экспорт
        out_file = Path(args.out) / (file.stem + self.config.OUTPUT_SUFFIX + "." + args.format)
        return self.exporter.process_and_save(stencil, out_file, transparent=args.transparent, fmt=args.format)

    def run(self, argv=None) -> int:
        args = self.parse_args(argv)
        self.setup_logging(args.verbose)
        self.config.MAX_DIM = args.max_dim
        settings = self.build_settings(args)

        input_path = Path(args.input_dir)
        output_path = Path(args.out)
        output_path.mkdir(parents=True, exist_ok=True)

        files = self.collect_files(input_path)
        if not files:
            console.print("[bold red]Ошибка:[/bold red] Файлы не найдены.")
            return 1

        ai_label = " + ".join(x for x in (args.prompt and "prompt", args.ai) if x)
        console.print(Panel.fit(
            f"Файлов: [bold cyan]{len(files)}[/bold cyan]\n"
            f"Режим: [bold green]{settings.mode.value}[/bold green]"
            + (f" + AI [bold magenta]{ai_label}[/bold magenta]" if ai_label else ""),
            title="Tattoo Stencil", border_style="blue"
        ))

        results = []

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("[cyan]Обработка...", total=len(files))

            for file in files:
                start_time = time.time()
                status = "OK"
                line_pixels = 0

                try:
                    line_pixels = self.process_file(file, settings, args)
                except Exception as e:
                    status = f"ERROR: {e}"
                    log.error("Сбой на %s: %s", file.name, e)

                elapsed = time.time() - start_time
                results.append((file.name, f"{elapsed:.2f}s", str(line_pixels), status))
                progress.advance(task)

        self.print_summary(results)
        return 0 if all(row[3] == "OK" for row in results) else 2

    def print_summary(self, data):
        table = Table(title="Результаты", box=box.ROUNDED)
        table.add_column("Файл", style="cyan")
        table.add_column("Время", justify="right")
        table.add_column("Пиксели линий", justify="right")
        table.add_column("Статус", justify="center")

        for row in data:
            status_style = "green" if row[3] == "OK" else "red"
            short_status = row[3] if len(row[3]) < 20 else "ERROR"
            table.add_row(row[0], row[1], row[2], f"[{status_style}]{short_status}[/{status_style}]")

        console.print(table)


def main(argv=None) -> int:
    return ConsoleApp().run(argv)


if __name__ == "__main__":
    raise SystemExit(main())
