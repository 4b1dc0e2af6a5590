#!/usr/bin/env python3
"""
LabFlow LIMS - Main Entry Point
Order intake, sample tracking and result review for a clinical laboratory.
"""

import sys
import logging
from datetime import date
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text

from labflow.core.config import settings
from labflow.core.database import create_tables, get_session, db_manager
from labflow.core.exceptions import LIMSException
from labflow.services.catalog import catalog
from labflow.services.record_store import SQLAlchemyRecordStore
from labflow.services.workflow_service import LabWorkflowService
from labflow.workflow.flags import flag_description
from labflow.workflow.states import OrderStatus

# Set up logging
settings.create_log_directory()
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format=settings.log_format,
    handlers=[
        logging.FileHandler(settings.log_file),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)
console = Console()

STATUS_STYLES = {
    OrderStatus.ORDER_CREATED.value: "white",
    OrderStatus.SAMPLE_COLLECTION.value: "cyan",
    OrderStatus.IN_PROGRESS.value: "yellow",
    OrderStatus.PENDING_APPROVAL.value: "magenta",
    OrderStatus.COMPLETED.value: "green",
    OrderStatus.DELIVERED.value: "bold green",
}


def display_welcome():
    """Display welcome message and system information"""

    welcome_text = Text()
    welcome_text.append("🧪 LabFlow LIMS\n", style="bold blue")
    welcome_text.append(f"Version: {settings.app_version}\n", style="green")
    welcome_text.append(f"Environment: {settings.environment}\n", style="yellow")
    welcome_text.append(f"Database: {settings.database_url}\n", style="cyan")

    panel = Panel(
        welcome_text,
        title="[bold]LabFlow System Status[/bold]",
        border_style="blue"
    )

    console.print(panel)


def initialize_database():
    """Initialize database, create tables and load the test catalog"""
    try:
        console.print("\n[bold blue]Initializing Database...[/bold blue]")

        if db_manager.test_connection():
            console.print("✅ Database connection successful")
        else:
            console.print("❌ Database connection failed")
            return False

        create_tables()
        console.print("✅ Database tables created/verified")

        session = get_session()
        try:
            catalog.initialize(SQLAlchemyRecordStore(session), seed=settings.catalog_seed_on_startup)
        finally:
            session.close()
        console.print(f"✅ Test catalog loaded ({len(catalog.analytes())} analytes)")

        return True

    except Exception as e:
        console.print(f"❌ Database initialization failed: {str(e)}")
        return False


def create_sample_data():
    """Register demo patients and walk one order through the whole workflow"""
    session = get_session()
    try:
        console.print("\n[bold blue]Creating Sample Data...[/bold blue]")
        service = LabWorkflowService(SQLAlchemyRecordStore(session), catalog=catalog)

        patients = [
            {"patient_id": "P001", "name": "John Doe", "sex": "M",
             "date_of_birth": date(1980, 1, 15), "phone": "555-0123"},
            {"patient_id": "P002", "name": "Jane Smith", "sex": "F",
             "date_of_birth": date(1975, 6, 22), "phone": "555-0456"},
        ]
        for patient in patients:
            if service.store.count("patients", {"patient_id": patient["patient_id"]}):
                continue
            service.register_patient(**patient)
            console.print(f"✅ Created patient: {patient['name']}")

        order = service.create_order("P002", ["Lipid Profile", "Liver Function Test (LFT)"])
        console.print(f"✅ Created order {order['sample_id']} ({order['color_name']})")

        for target in (OrderStatus.SAMPLE_COLLECTION, OrderStatus.IN_PROGRESS):
            order = service.request_order_transition(order["id"], target, "Demo Technician")
            console.print(f"   ➡️  {order['status']}")

        lipid = service.submit_result(order["id"], "Lipid Profile", [
            {"parameter": "Total Cholesterol", "value": "215", "unit": "mg/dL"},
            {"parameter": "HDL Cholesterol", "value": "28", "unit": "mg/dL"},
            {"parameter": "LDL Cholesterol", "value": "95", "unit": "mg/dL"},
        ], "Demo Technician")
        lft = service.submit_result(order["id"], "Liver Function Test (LFT)", [
            {"parameter": "SGOT (AST)", "value": "35", "unit": "U/L"},
            {"parameter": "SGPT (ALT)", "value": "72", "unit": "U/L"},
        ], "Demo Technician")
        display_result(lipid)
        display_result(lft)

        for result in (lipid, lft):
            service.approve_result(result["id"], "Dr. Reviewer")
            service.mark_result_reported(result["id"])

        order = service.get_order(order["id"])
        console.print(f"✅ Order {order['sample_id']} is now [bold]{order['status']}[/bold]")

    except LIMSException as e:
        console.print(f"❌ Workflow rejected the demo: {e.message}")
    except Exception as e:
        console.print(f"❌ Failed to create sample data: {str(e)}")
    finally:
        session.close()


def display_result(result: dict):
    """Print one result's values with their flags"""
    table = Table(title=f"{result['test_name']} ({result['status']})")
    table.add_column("Parameter", style="cyan")
    table.add_column("Value", style="white")
    table.add_column("Unit", style="green")
    table.add_column("Reference", style="yellow")
    table.add_column("Flag", style="bold red")

    for value in result["values"]:
        table.add_row(
            value["parameter"],
            value["value"],
            value["unit"] or "",
            value["reference_range"] or "",
            flag_description(value["flag"]) if value["flag"] else "",
        )

    console.print(table)


def display_system_status():
    """Display order counts by status"""
    session = get_session()
    try:
        console.print("\n[bold blue]System Status:[/bold blue]")
        store = SQLAlchemyRecordStore(session)

        table = Table(title="Orders by Status")
        table.add_column("Status", style="cyan", no_wrap=True)
        table.add_column("Count", style="magenta")

        for order_status in OrderStatus:
            table.add_row(order_status.value, str(store.count("orders", {"status": order_status})))

        table.add_row("Patients", str(store.count("patients")))
        table.add_row("Results", str(store.count("results")))
        console.print(table)

    except Exception as e:
        console.print(f"❌ Failed to get system status: {str(e)}")
    finally:
        session.close()


def display_order_board():
    """Display recent orders with their tube color and status"""
    session = get_session()
    try:
        console.print("\n[bold blue]Order Board:[/bold blue]")
        service = LabWorkflowService(SQLAlchemyRecordStore(session), catalog=catalog)
        orders = service.list_orders(limit=50)

        if not orders:
            console.print("No orders found in the system.")
            return

        table = Table(title="Recent Orders")
        table.add_column("Sample ID", no_wrap=True)
        table.add_column("Patient", style="white")
        table.add_column("Tests", style="green")
        table.add_column("Priority", style="yellow")
        table.add_column("Status")

        for order in orders:
            table.add_row(
                f"[{order['color_code']}]■[/] {order['sample_id']}",
                order["patient_id"],
                ", ".join(order["tests"]),
                order["priority"],
                f"[{STATUS_STYLES.get(order['status'], 'white')}]{order['status']}[/]",
            )

        console.print(table)

    except Exception as e:
        console.print(f"❌ Failed to display orders: {str(e)}")
    finally:
        session.close()


def display_catalog():
    """Display the analyte catalog"""
    table = Table(title="Analyte Catalog")
    table.add_column("Analyte", style="cyan", no_wrap=True)
    table.add_column("Unit", style="green")
    table.add_column("Reference Range", style="white")
    table.add_column("Critical", style="red")

    for analyte in catalog.analytes():
        critical = " / ".join(v for v in (analyte["low_critical"], analyte["high_critical"]) if v)
        table.add_row(analyte["name"], analyte["unit"] or "", analyte["reference_range"] or "", critical)

    console.print(table)


def run_api_server():
    """Serve the REST API with uvicorn"""
    import uvicorn

    console.print(f"\n[bold blue]Starting API on {settings.api_host}:{settings.api_port}...[/bold blue]")
    uvicorn.run(
        "labflow.api.rest_api:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower()
    )


def interactive_menu():
    """Display interactive menu for LabFlow operations"""
    while True:
        console.print("\n[bold green]LabFlow Menu:[/bold green]")
        console.print("  1. Display System Status")
        console.print("  2. View Order Board")
        console.print("  3. View Analyte Catalog")
        console.print("  4. Run Sample Workflow")
        console.print("  5. Start API Server")
        console.print("  0. Exit")

        try:
            choice = input("\nSelect an option (0-5): ").strip()

            if choice == "1":
                display_system_status()
            elif choice == "2":
                display_order_board()
            elif choice == "3":
                display_catalog()
            elif choice == "4":
                create_sample_data()
            elif choice == "5":
                run_api_server()
            elif choice == "0":
                console.print("\n[bold blue]Thank you for using LabFlow![/bold blue]")
                break
            else:
                console.print("❌ Invalid option. Please select 0-5.")

        except KeyboardInterrupt:
            console.print("\n\n[bold blue]Thank you for using LabFlow![/bold blue]")
            break
        except Exception as e:
            console.print(f"❌ Error: {str(e)}")


def main():
    """Main entry point for LabFlow"""
    try:
        display_welcome()

        if not initialize_database():
            console.print("❌ Failed to initialize database. Exiting...")
            sys.exit(1)

        display_system_status()

        if len(sys.argv) > 1 and sys.argv[1] == "serve":
            run_api_server()
            return

        interactive_menu()

    except KeyboardInterrupt:
        console.print("\n\n[bold yellow]System shutdown requested...[/bold yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error in main: {str(e)}")
        console.print(f"❌ Fatal error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
