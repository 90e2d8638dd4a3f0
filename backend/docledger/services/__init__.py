# Services Package
from docledger.services.storage_service import StorageGateway
from docledger.services.inference_service import InferenceClient
from docledger.services.queue_service import ProcessingQueueService
from docledger.services.document_service import DocumentService, DocumentState
from docledger.services.stage_service import (
    ConversionStage, OcrStage, ExtractionStage, CategorizationStage,
    TransactionGenerator
)
from docledger.services.pipeline_service import PipelineOrchestrator
from docledger.services.accounting_service import AccountService, JournalEntryService
from docledger.services.crm_service import CustomerService
from docledger.services.sales_service import InvoiceService, QuotationService
from docledger.services.banking_service import BankAccountService, BankTransactionService
from docledger.services.posting_service import PostingService
from docledger.services.report_service import ReportService

__all__ = [
    'StorageGateway',
    'InferenceClient',
    'ProcessingQueueService',
    'DocumentService',
    'DocumentState',
    'ConversionStage',
    'OcrStage',
    'ExtractionStage',
    'CategorizationStage',
    'TransactionGenerator',
    'PipelineOrchestrator',
    'AccountService',
    'JournalEntryService',
    'CustomerService',
    'InvoiceService',
    'QuotationService',
    'BankAccountService',
    'BankTransactionService',
    'PostingService',
    'ReportService',
]
